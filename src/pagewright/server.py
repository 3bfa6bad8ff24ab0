"""
Development HTTP server for the output tree, with live reload over
server-sent events.
"""
from __future__ import annotations

import argparse
import hashlib
import http.server
import mimetypes
import os
import pathlib
import queue
import threading
import typing
if typing.TYPE_CHECKING:
    from socketserver import _AfInetAddress

from .pretty_utils import print_with_style


INDEX_FILE = 'index.html'
# Default used by nginx
DEFAULT_MIME_TYPE = 'application/octet-stream'
RELOAD_PATH = '/__reload'
KEEPALIVE_INTERVAL = 15.0
RELOAD_KINDS = {'page', 'css'}

RELOAD_SNIPPET = '''\
<script>
(function () {
  var source = new EventSource('/__reload');
  source.addEventListener('reload', function (event) {
    if (event.data === 'css') {
      document.querySelectorAll('link[rel="stylesheet"]').forEach(function (link) {
        var url = new URL(link.href);
        url.searchParams.set('_reload', Date.now());
        link.href = url.toString();
      });
    } else {
      window.location.reload();
    }
  });
})();
</script>
'''


def inject_reload_snippet(html: bytes) -> bytes:
    """
    Insert the live reload script before the last `</body>`, or append it
    when the document has none.
    """
    snippet = RELOAD_SNIPPET.encode('utf-8')
    index = html.lower().rfind(b'</body>')
    if index == -1:
        return html + snippet
    return html[:index] + snippet + html[index:]


class ReloadChannel:
    """
    Fan-out of reload notifications to every connected browser.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: list[queue.SimpleQueue[str | None]] = []
        self.closed = False

    def subscribe(self):
        subscriber: queue.SimpleQueue[str | None] = queue.SimpleQueue()
        with self._lock:
            if self.closed:
                subscriber.put(None)
            else:
                self._subscribers.append(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: queue.SimpleQueue[str | None]):
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    @property
    def subscriber_count(self):
        with self._lock:
            return len(self._subscribers)

    def notify(self, kind: str = 'page'):
        """
        Ask connected browsers to reload. @kind is `page` for a full refresh
        or `css` to re-fetch stylesheets only.
        """
        if kind not in RELOAD_KINDS:
            raise ValueError(f'Unknown reload kind {kind!r}')
        with self._lock:
            for subscriber in self._subscribers:
                subscriber.put(kind)

    def close(self):
        with self._lock:
            self.closed = True
            for subscriber in self._subscribers:
                subscriber.put(None)
            self._subscribers.clear()


class ThreadedHTTPServer(http.server.ThreadingHTTPServer):
    """
    A simple HTTP server that handles each request in a separate thread.
    """
    RequestHandlerClass: typing.Type[Handler]
    daemon_threads = True

    def __init__(self,
                 server_address: _AfInetAddress,
                 directory: str | pathlib.Path = '.',
                 channel: ReloadChannel | None = None,
                 RequestHandlerClass: typing.Type[Handler] | None = None,
                 bind_and_activate: bool = True) -> None:
        super().__init__(server_address, RequestHandlerClass or Handler, bind_and_activate)
        self.directory = str(pathlib.Path(directory).resolve())
        self.channel = channel or ReloadChannel()

    def finish_request(self, request, client_address) -> None:
        self.RequestHandlerClass(request, client_address, self, directory=self.directory)


class Handler(http.server.SimpleHTTPRequestHandler):
    server: ThreadedHTTPServer

    def get_etag(self, file_path):
        """
        Generate an etag for a file based on its path and modification time.
        """
        mtime = os.path.getmtime(file_path)
        file_size = os.path.getsize(file_path)
        file_info = f"{file_size}-{mtime}"
        return hashlib.md5(file_info.encode('utf-8')).hexdigest()

    def log_message(self, format, *args):
        print_with_style(f'{self.address_string()} - {format % args}', style='dim')

    def do_GET(self):
        if self.path.split('?', 1)[0] == RELOAD_PATH:
            return self.serve_events()
        try:
            file_path = pathlib.Path(self.translate_path(self.path))
            if file_path.is_dir():
                file_path /= INDEX_FILE

            # Double-check that we haven't escaped the directory.
            # self.translate_path() should discard any suspicious path
            # components, but it's better to be safe.
            if not file_path.resolve().is_relative_to(self.directory):
                return self.send_error(403, 'Forbidden')

            etag = self.get_etag(file_path)
            # Check if the client already has the file
            if 'If-None-Match' in self.headers and self.headers['If-None-Match'] == etag:
                self.send_response(304)
                self.end_headers()
                return

            mime_type, _enc = mimetypes.guess_type(file_path)
            if mime_type == 'text/html':
                self.send_html(file_path, etag)
            else:
                self.send_file(file_path, mime_type or DEFAULT_MIME_TYPE, etag)
        except FileNotFoundError:
            self.send_error(404, f'File Not Found: {self.path}')

    def send_html(self, file_path: pathlib.Path, etag: str):
        body = inject_reload_snippet(file_path.read_bytes())
        self.send_response(200)
        self.send_header('Content-type', 'text/html')
        self.send_header('Content-Length', str(len(body)))
        self.send_header('ETag', etag)
        self.end_headers()
        self.wfile.write(body)

    def send_file(self, file_path: pathlib.Path, mime_type: str, etag: str):
        with open(file_path, 'rb') as file:
            self.send_response(200)
            self.send_header('Content-type', mime_type)
            self.send_header('Content-Length', str(os.fstat(file.fileno()).st_size))
            self.send_header('ETag', etag)
            self.end_headers()
            # Serve the file in chunks to avoid reading the entire file into
            # memory
            chunk_size = 8192
            while True:
                chunk = file.read(chunk_size)
                if not chunk:
                    break
                self.wfile.write(chunk)

    def serve_events(self):
        """
        Hold the connection open and stream reload events until the channel
        closes or the client goes away.
        """
        channel = self.server.channel
        subscriber = channel.subscribe()
        self.close_connection = True
        try:
            self.send_response(200)
            self.send_header('Content-type', 'text/event-stream')
            self.send_header('Cache-Control', 'no-cache')
            self.end_headers()
            self.wfile.write(b': connected\n\n')
            self.wfile.flush()
            while True:
                try:
                    kind = subscriber.get(timeout=KEEPALIVE_INTERVAL)
                except queue.Empty:
                    self.wfile.write(b': keepalive\n\n')
                else:
                    if kind is None:
                        break
                    self.wfile.write(f'event: reload\ndata: {kind}\n\n'.encode('utf-8'))
                self.wfile.flush()
        except (BrokenPipeError, ConnectionResetError):
            pass
        finally:
            channel.unsubscribe(subscriber)


class DevServer:
    """
    Run a ThreadedHTTPServer for @directory on a background thread.
    """
    def __init__(self, directory: str | pathlib.Path, port: int, host: str = 'localhost'):
        self.directory = pathlib.Path(directory)
        self.host = host
        self.port = port
        self.channel = ReloadChannel()
        self.httpd: ThreadedHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def url(self):
        return f'http://{self.host}:{self.port}/'

    def start(self):
        self.directory.mkdir(parents=True, exist_ok=True)
        self.httpd = ThreadedHTTPServer((self.host, self.port), self.directory, self.channel)
        self._thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)
        self._thread.start()
        print_with_style(f'Serving at {self.url}', style='bold')
        return self

    def notify(self, kind: str = 'page'):
        self.channel.notify(kind)

    def stop(self):
        self.channel.close()
        if self.httpd is not None:
            self.httpd.shutdown()
            self.httpd.server_close()
            self.httpd = None
        if self._thread is not None:
            self._thread.join()
            self._thread = None


def serve(port: int, directory: str | pathlib.Path, host: str = 'localhost'):
    with ThreadedHTTPServer((host, port), directory) as httpd:
        print_with_style(f'Serving at http://{host}:{port}', style='bold')
        httpd.serve_forever()


def main(arguments: list[str] | None = None):
    parser = argparse.ArgumentParser(description='Serve a directory with live reload support.')
    parser.add_argument('-p', '--port',
                        help='port to serve from',
                        type=int,
                        default=8080)
    parser.add_argument('-d', '--directory',
                        help='directory to serve',
                        type=pathlib.Path,
                        default='.')
    args = parser.parse_args(arguments)
    serve(args.port, args.directory)


if __name__ == '__main__':
    main()
