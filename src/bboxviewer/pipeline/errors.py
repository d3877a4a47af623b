from __future__ import annotations


class ViewerError(Exception):
    """Base for failures that abandon one polling iteration."""


class FetchError(ViewerError):
    def __init__(self, url: str, message: str):
        super().__init__(f"{url}: {message}")
        self.url = url


class FetchTimeout(FetchError):
    pass


class TransportError(FetchError):
    pass


class ParseError(ViewerError):
    pass


class DecodeError(ViewerError):
    pass
