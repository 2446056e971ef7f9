"""
Domain exceptions
"""


class FitSpoError(Exception):
    """Base class for service errors"""


class StoreUnavailableError(FitSpoError):
    """The document store could not be reached or rejected the request"""


class PostNotFoundError(FitSpoError):
    """The requested post does not exist"""

    def __init__(self, post_id: str):
        super().__init__(f"Post {post_id} not found")
        self.post_id = post_id


class PermissionDeniedError(FitSpoError):
    """The caller is not allowed to modify the resource"""


class SearchUnavailableError(FitSpoError):
    """The search index could not answer the query"""


class UploadError(FitSpoError):
    """Image could not be processed or stored"""
