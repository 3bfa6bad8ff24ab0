import re
import typing as t

from ruamel.yaml import YAML


FRONT_MATTER_RE = re.compile(r'\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)', re.DOTALL | re.MULTILINE)


def split_front_matter(text: str) -> tuple[str | None, str]:
    """
    Separate a leading `---` delimited front matter block from the rest of a
    document. Returns `(None, text)` if there is no such block.
    """
    match = FRONT_MATTER_RE.match(text)
    if not match:
        return None, text
    return match.group(1), text[match.end():]


def load_yaml(text: str) -> t.Any:
    """
    Parse YAML with ruamel.yaml's safe loader. Raises `ruamel.yaml.error.YAMLError`.
    """
    return YAML(typ='safe').load(text)
