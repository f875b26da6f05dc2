"""
Request pipeline shared by every route.
"""

from .pipeline import RequestContext, RequestPipeline, extract_bearer_token, get_client_ip

__all__ = ["RequestContext", "RequestPipeline", "extract_bearer_token", "get_client_ip"]
