"""Request descriptors.

A `RequestDescriptor` identifies "evaluate this remote call with these
arguments". Equality and hashing are defined over a canonical encoding of the
call, so two descriptors built independently for the same call compare equal
and share one subscription.

Example:
    ```python
    from streamrpc.descriptor import procedure_call, property_get

    d0 = procedure_call("TestService", "Int32ToString", 42)
    d1 = procedure_call("TestService", "Int32ToString", 42)
    assert d0 == d1 and hash(d0) == hash(d1)

    prop = property_get("TestService", "StringProperty")
    assert prop.procedure == "get_StringProperty"
    ```
"""

from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from streamrpc._iutils.hashing import HashMethod, canonical_encode
from streamrpc._iutils import hashing


@dataclass(frozen=True)
class RemoteObject:
    """Reference to an object that lives on the server."""
    service: str
    class_name: str
    object_id: int


@dataclass(frozen=True, eq=False)
class RequestDescriptor:
    """A remote call whose result can be streamed.

    Attributes:
        service: Name of the remote service.
        procedure: Procedure name within the service.
        arguments: Positional arguments, in call order.
    """
    service: str
    procedure: str
    arguments: tuple = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.arguments, tuple):
            object.__setattr__(self, "arguments", tuple(self.arguments))

    @cached_property
    def _canonical(self) -> bytes:
        return canonical_encode([self.service, self.procedure, list(self.arguments)])

    def canonical_bytes(self) -> bytes:
        """Canonical encoding used for equality and hashing."""
        return self._canonical

    def content_hash(self, method: HashMethod = HashMethod.xxh64) -> int:
        """Digest of the canonical encoding."""
        return hashing.hash(self._canonical, method)

    @cached_property
    def _hash(self) -> int:
        return self.content_hash()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RequestDescriptor):
            return NotImplemented
        return self.canonical_bytes() == other.canonical_bytes()

    def __hash__(self) -> int:
        return self._hash

    def __str__(self) -> str:
        args = ", ".join(repr(a) for a in self.arguments)
        return f"{self.service}.{self.procedure}({args})"


def procedure_call(service: str, name: str, *args: Any) -> RequestDescriptor:
    """Descriptor for a plain service procedure."""
    return RequestDescriptor(service, name, args)


def property_get(service: str, name: str) -> RequestDescriptor:
    """Descriptor for reading a service property."""
    return RequestDescriptor(service, f"get_{name}")


def method_call(obj: RemoteObject, name: str, *args: Any) -> RequestDescriptor:
    """Descriptor for invoking a method on a remote object."""
    return RequestDescriptor(obj.service, f"{obj.class_name}_{name}", (obj.object_id, *args))


def static_method_call(service: str, class_name: str, name: str, *args: Any) -> RequestDescriptor:
    """Descriptor for a static method of a remote class."""
    return RequestDescriptor(service, f"{class_name}_static_{name}", args)


def object_property_get(obj: RemoteObject, name: str) -> RequestDescriptor:
    """Descriptor for reading a property of a remote object."""
    return RequestDescriptor(obj.service, f"{obj.class_name}_get_{name}", (obj.object_id,))
