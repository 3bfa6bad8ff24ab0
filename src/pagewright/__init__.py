"""
pagewright builds static websites from templates, stylesheets, scripts and
images, and serves them with live reload during development.
"""
from .blocks import collect_blocks, write_block_indices, write_block_metadata
from .composer import CompositionError, MalformedData, MissingLayout, MissingPartial, RenderContext, TemplateComposer
from .config import Config, ConfigError, PathConfig, load_config, parse_config
from .core import BundleStep, FileStep, Step, StepUnavailableException, TransformError
from .css import CSSCompiler, LintError, LintIssue, SassCompiler, StyleCompiler
from .dependencies import Dependency, PipDependency
from .graph import BuildRun, GraphError, OutputClaim, Parallel, PipelineResult, Series, Task, TaskFailure, TaskGraph
from .images import PillowStep
from .scripts import ScriptBundleStep
from .simple import DirectCopyStep
from .site import PIPELINES, SiteLayout, SiteTasks, build_graph
from .styleguide import StyleguideStep
from .watch import WatchBinding, WatchController, WatchDispatchError, pipeline_lanes
