"""
Deterministic document paths.

    {namespace}/users/{userId}/data/profile
    {namespace}/users/{userId}/businesses/{businessId}
    {namespace}/users/{userId}/businesses/{businessId}/complianceItems/{itemId}
    {namespace}/config/remote
"""
from compliance_app.config import settings


def _segment(value: str, label: str) -> str:
    if not value or "/" in value:
        raise ValueError(f"Invalid {label} for document path: {value!r}")
    return value


def _namespace(namespace: str = None) -> str:
    ns = (namespace if namespace is not None else settings.app_namespace).strip("/")
    if not ns:
        raise ValueError("Application namespace must not be empty")
    return ns


def user_root(user_id: str, namespace: str = None) -> str:
    return f"{_namespace(namespace)}/users/{_segment(user_id, 'user id')}"


def profile_path(user_id: str, namespace: str = None) -> str:
    return f"{user_root(user_id, namespace)}/data/profile"


def businesses_path(user_id: str, namespace: str = None) -> str:
    return f"{user_root(user_id, namespace)}/businesses"


def business_path(user_id: str, business_id: str, namespace: str = None) -> str:
    return f"{businesses_path(user_id, namespace)}/{_segment(business_id, 'business id')}"


def compliance_items_path(user_id: str, business_id: str, namespace: str = None) -> str:
    return f"{business_path(user_id, business_id, namespace)}/complianceItems"


def compliance_item_path(user_id: str, business_id: str, item_id: str, namespace: str = None) -> str:
    return f"{compliance_items_path(user_id, business_id, namespace)}/{_segment(item_id, 'item id')}"


def remote_config_path(namespace: str = None) -> str:
    return f"{_namespace(namespace)}/config/remote"


def split_path(path: str):
    """Return (parent collection path, document id)."""
    parent, _, doc_id = path.rpartition("/")
    if not parent or not doc_id:
        raise ValueError(f"Not a document path: {path!r}")
    return parent, doc_id
