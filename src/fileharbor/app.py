"""WSGI boundary exposing the proxy endpoint.

GET /proxy/<base64 url> streams the local copy of the external file, or
redirects to the origin when no copy could be made.
"""

import logging
import mimetypes
import os

from werkzeug.exceptions import BadRequest, HTTPException, NotFound
from werkzeug.routing import Map, Rule
from werkzeug.utils import redirect
from werkzeug.wrappers import Request, Response
from werkzeug.wsgi import wrap_file

from fileharbor.cache_utils import decode_proxy_segment
from fileharbor.engine import ProxyEngine, RedirectToOrigin
from fileharbor.errors import InvalidUrlError

LOG = logging.getLogger("fileharbor.app")


class ProxyApp:
    def __init__(self, engine: ProxyEngine) -> None:
        self.engine = engine
        self.url_map = Map([
            Rule("/proxy/<path:segment>", endpoint="proxy", methods=["GET", "HEAD"]),
            Rule("/health", endpoint="health"),
        ], merge_slashes=False)

    def dispatch_request(self, request: Request):
        adapter = self.url_map.bind_to_environ(request.environ)
        try:
            endpoint, values = adapter.match()
            return getattr(self, f"on_{endpoint}")(request, **values)
        except HTTPException as e:
            return e

    def on_health(self, request: Request) -> Response:
        return Response("ok", mimetype="text/plain")

    def on_proxy(self, request: Request, segment: str) -> Response:
        try:
            url = decode_proxy_segment(segment)
            result = self.engine.resolve(url)
        except InvalidUrlError as e:
            LOG.warning("Rejected proxy request segment=%s error=%s", segment, e)
            raise BadRequest(str(e))
        if isinstance(result, RedirectToOrigin):
            return self.redirect_to_origin(result.url)
        return self.download(request, result.location)

    @staticmethod
    def download(request: Request, location: str) -> Response:
        try:
            f = open(location, "rb")
            size = os.fstat(f.fileno()).st_size
        except (FileNotFoundError, IsADirectoryError):
            LOG.error("Cached file missing path=%s", location)
            raise NotFound()
        name = os.path.basename(location)
        mimetype = mimetypes.guess_type(name)[0] or "application/octet-stream"
        headers = {
            "Content-Description": "File Transfer",
            "Content-Disposition": 'attachment; filename="%s"' % name.replace('"', '\\"'),
        }
        response = Response(
            wrap_file(request.environ, f),
            status=200,
            headers=headers,
            mimetype=mimetype,
            direct_passthrough=True,
        )
        response.content_length = size
        return response

    @staticmethod
    def redirect_to_origin(url: str) -> Response:
        response = redirect(url, code=302)
        # never cache the redirect, the next request gets another chance to fetch
        response.headers["Cache-Control"] = "max-age=0"
        return response

    def wsgi_app(self, environ, start_response):
        request = Request(environ)
        response = self.dispatch_request(request)
        return response(environ, start_response)

    def __call__(self, environ, start_response):
        return self.wsgi_app(environ, start_response)


def create_app(engine: ProxyEngine) -> ProxyApp:
    return ProxyApp(engine)
