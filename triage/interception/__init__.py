"""
HTTP traffic interception with mitmproxy

Components:
- Interceptor: mitmproxy addon forwarding completed flows to the pipeline
- Proxy Server: mitmproxy lifecycle management
"""

from .interceptor import ScanInterceptor
from .proxy_server import ProxyServer

__all__ = [
    "ScanInterceptor",
    "ProxyServer",
]
