# lfs/renderers.py
from rest_framework.negotiation import BaseContentNegotiation
from rest_framework.parsers import JSONParser
from rest_framework.renderers import JSONRenderer

LFS_MEDIA_TYPE = 'application/vnd.git-lfs+json'


class LFSJSONRenderer(JSONRenderer):
    media_type = LFS_MEDIA_TYPE
    # git-lfs sends `Accept: application/vnd.git-lfs+json` and nothing else.
    format = 'git-lfs'
    ensure_ascii = False


class LFSJSONParser(JSONParser):
    media_type = LFS_MEDIA_TYPE
    renderer_class = LFSJSONRenderer


class IgnoreClientContentNegotiation(BaseContentNegotiation):
    """The transfer endpoints answer with raw bytes or an LFS error, whatever the client asks for."""

    def select_parser(self, request, parsers):
        return parsers[0] if parsers else None

    def select_renderer(self, request, renderers, format_suffix=None):
        return (renderers[0], renderers[0].media_type)
