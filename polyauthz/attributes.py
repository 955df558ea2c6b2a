"""
Attribute store adapter and entity resolution for polyauthz

The attribute store is the boundary to the caller's persistence layer.
Fetches run on a worker pool and are bounded by a timeout so a slow store
degrades the evaluators that need attributes instead of hanging a decision.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable
import structlog

from .exceptions import AttributeTimeoutError, NotFoundError
from .policy.models import Resource, Subject

logger = structlog.get_logger(__name__)

# Keys of a fetched attribute mapping that populate entity fields rather than attributes
SUBJECT_FIELDS = ("roles", "groups", "owned_resources")
RESOURCE_FIELDS = ("type", "owner_id", "label", "acl")


@runtime_checkable
class AttributeStore(Protocol):
    """Supplies attribute values for subjects and resources on demand.

    Both methods may raise ``NotFoundError`` or ``AttributeTimeoutError``.
    """

    def fetch_subject_attributes(self, subject_id: str) -> Mapping[str, Any]:
        ...

    def fetch_resource_attributes(self, resource_id: str) -> Mapping[str, Any]:
        ...


class InMemoryAttributeStore:
    """In-memory attribute store for testing and embedding"""

    def __init__(self):
        self._subjects: Dict[str, Dict[str, Any]] = {}
        self._resources: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def set_subject_attributes(self, subject_id: str, attributes: Mapping[str, Any]) -> None:
        with self._lock:
            self._subjects[subject_id] = dict(attributes)

    def set_resource_attributes(self, resource_id: str, attributes: Mapping[str, Any]) -> None:
        with self._lock:
            self._resources[resource_id] = dict(attributes)

    def fetch_subject_attributes(self, subject_id: str) -> Mapping[str, Any]:
        with self._lock:
            if subject_id not in self._subjects:
                raise NotFoundError("subject", subject_id)
            return dict(self._subjects[subject_id])

    def fetch_resource_attributes(self, resource_id: str) -> Mapping[str, Any]:
        with self._lock:
            if resource_id not in self._resources:
                raise NotFoundError("resource", resource_id)
            return dict(self._resources[resource_id])


class EntityDirectory:
    """Subjects and resources registered by the caller"""

    def __init__(self):
        self._subjects: Dict[str, Subject] = {}
        self._resources: Dict[str, Resource] = {}
        self._lock = threading.Lock()

    def put_subject(self, subject: Subject) -> None:
        with self._lock:
            self._subjects[subject.id] = subject

    def put_resource(self, resource: Resource) -> None:
        with self._lock:
            self._resources[resource.id] = resource

    def get_subject(self, subject_id: str) -> Optional[Subject]:
        return self._subjects.get(subject_id)

    def get_resource(self, resource_id: str) -> Optional[Resource]:
        return self._resources.get(resource_id)

    def remove_subject(self, subject_id: str) -> bool:
        with self._lock:
            return self._subjects.pop(subject_id, None) is not None

    def remove_resource(self, resource_id: str) -> bool:
        with self._lock:
            return self._resources.pop(resource_id, None) is not None


def _merge_subject(subject_id: str, registered: Optional[Subject], fetched: Mapping[str, Any]) -> Subject:
    attributes = {k: v for k, v in fetched.items() if k not in SUBJECT_FIELDS}
    roles = set(fetched.get("roles") or ())
    groups = set(fetched.get("groups") or ())
    owned = set(fetched.get("owned_resources") or ())
    if registered is None:
        return Subject(id=subject_id, roles=roles, groups=groups,
                       owned_resources=owned, attributes=attributes)
    # Registered values win; fetched values only fill gaps
    return registered.model_copy(update={
        "roles": set(registered.roles) | roles,
        "groups": set(registered.groups) | groups,
        "owned_resources": set(registered.owned_resources) | owned,
        "attributes": {**attributes, **registered.attributes},
    })


def _merge_resource(resource_id: str, registered: Optional[Resource], fetched: Mapping[str, Any]) -> Resource:
    attributes = {k: v for k, v in fetched.items() if k not in RESOURCE_FIELDS}
    if registered is None:
        if not fetched.get("type"):
            raise NotFoundError("resource", resource_id)
        return Resource(
            id=resource_id,
            type=fetched["type"],
            owner_id=fetched.get("owner_id"),
            label=fetched.get("label"),
            attributes=attributes,
            acl=list(fetched.get("acl") or ()),
        )
    return registered.model_copy(update={
        "owner_id": registered.owner_id or fetched.get("owner_id"),
        "attributes": {**attributes, **registered.attributes},
    })


class EntityResolver:
    """Resolves subject and resource identifiers into entities"""

    def __init__(self, directory: EntityDirectory, store: Optional[AttributeStore] = None,
                 timeout_seconds: float = 0.5, max_workers: int = 8):
        self.directory = directory
        self.store = store
        self.timeout_seconds = timeout_seconds
        self._executor = (
            ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="polyauthz-attrs")
            if store is not None else None
        )

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _submit(self, fetch: Callable[[str], Mapping[str, Any]], entity_id: str) -> Future:
        return self._executor.submit(fetch, entity_id)

    def _collect(self, future: Future, kind: str, entity_id: str, deadline: float) -> Mapping[str, Any]:
        remaining = max(0.0, deadline - time.monotonic())
        try:
            return future.result(timeout=remaining)
        except FutureTimeoutError:
            future.cancel()
            raise AttributeTimeoutError(kind, entity_id, self.timeout_seconds) from None

    def _finish(self, kind: str, entity_id: str, registered: Any, future: Optional[Future],
                deadline: float, merge: Callable) -> Any:
        if future is None:
            if registered is None:
                raise NotFoundError(kind, entity_id)
            return registered
        try:
            fetched = self._collect(future, kind, entity_id, deadline)
        except NotFoundError:
            if registered is None:
                raise
            return registered
        except AttributeTimeoutError:
            logger.warning("Attribute fetch timed out", kind=kind, id=entity_id,
                           timeout_seconds=self.timeout_seconds)
            if registered is None:
                raise
            return registered.model_copy(update={"attributes_complete": False})
        return merge(entity_id, registered, fetched)

    def resolve(self, subject_id: str, resource_id: str) -> Tuple[Subject, Resource]:
        """
        Resolve both entities, fetching their attributes concurrently.

        Raises:
            NotFoundError: If an entity is neither registered nor known to the store
            AttributeTimeoutError: If an unregistered entity could not be fetched in time
        """
        registered_subject = self.directory.get_subject(subject_id)
        registered_resource = self.directory.get_resource(resource_id)

        subject_future = resource_future = None
        if self.store is not None:
            subject_future = self._submit(self.store.fetch_subject_attributes, subject_id)
            resource_future = self._submit(self.store.fetch_resource_attributes, resource_id)
        deadline = time.monotonic() + self.timeout_seconds

        try:
            subject = self._finish("subject", subject_id, registered_subject,
                                   subject_future, deadline, _merge_subject)
            resource = self._finish("resource", resource_id, registered_resource,
                                    resource_future, deadline, _merge_resource)
        finally:
            for future in (subject_future, resource_future):
                if future is not None:
                    future.cancel()
        return subject, resource
