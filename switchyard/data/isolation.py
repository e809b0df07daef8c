"""Per-test data isolation.

Every test execution gets an IsolationContext whose namespace is embedded
into generated data (emails, names, titles). Records created by
concurrently running tests therefore never collide, and the namespace
can be read back from any decorated value to find what a test created.

Namespaces look like ``test_<time36>_<worker36>_<retry36>``.

Example:
    >>> factory = IsolationContextFactory()
    >>> ctx = factory.create_context(TestIdentity(file="tests/test_orders.py",
    ...                                           title="places an order"))
    >>> isolated = factory.isolate({"email": "qa@example.com", "qty": 2}, ctx)
    >>> isolated.data["email"]
    'test_lq3k2x1a_0_0_qa@example.com'
    >>> factory.extract_namespace(isolated.data["email"]) == ctx.namespace
    True
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

ISOLATION_VERSION = "1.0"

NAMESPACE_PATTERN = r"test_[a-z0-9]+_[a-z0-9]+_[a-z0-9]+"

# Applied in order, first occurrence only.
_STRING_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^(test|user|admin|qa)@"), r"{ns}_\1@"),
    (re.compile(r"^(Test|Demo|Sample)\s+"), r"{ns} \1 "),
    (re.compile(r"__test__"), r"__test_{ns}__"),
]

_EXTRACT_PATTERNS: list[re.Pattern[str]] = [
    re.compile(rf"^({NAMESPACE_PATTERN})_"),
    re.compile(rf"^({NAMESPACE_PATTERN}) "),
    re.compile(rf"\[({NAMESPACE_PATTERN})\]"),
    re.compile(rf"__test_({NAMESPACE_PATTERN})__"),
]

ISOLATABLE_FIELDS = ("name", "title", "email", "description")

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    """Encode a non-negative integer in lowercase base 36."""
    if value < 0:
        raise ValueError("base36 encoding requires a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def stable_hash(*parts: object) -> str:
    """Deterministic short id for the joined parts."""
    digest = hashlib.sha1("::".join(str(p) for p in parts).encode("utf-8")).digest()
    return to_base36(int.from_bytes(digest[:8], "big"))


def should_isolate_field(field_name: str) -> bool:
    """Identity-like keys contain name, title, email or description (any case)."""
    lowered = field_name.lower()
    return any(candidate in lowered for candidate in ISOLATABLE_FIELDS)


@dataclass(frozen=True)
class TestIdentity:
    """Who is asking for a namespace: one attempt of one test."""

    __test__ = False

    file: str
    title: str
    project: str = "default"
    retry: int = 0
    worker_index: int = 0
    parallel_index: int = 0

    @classmethod
    def from_pytest_item(cls, item: Any, worker_index: int = 0, retry: int = 0) -> TestIdentity:
        """Build an identity from a pytest item (``request.node``)."""
        return cls(
            file=str(item.path),
            title=item.name,
            project=item.config.rootpath.name,
            retry=retry,
            worker_index=worker_index,
        )


@dataclass(frozen=True)
class IsolationContext:
    """Namespace and identifiers for one test execution."""

    test_id: str
    suite_id: str
    run_id: str
    timestamp: datetime
    namespace: str
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class IsolatedData(Generic[T]):
    """Namespace-decorated data together with its context."""

    data: T
    context: IsolationContext
    metadata: dict[str, Any] = field(default_factory=dict)


class IsolationContextFactory:
    """Creates isolation contexts and decorates data with their namespace.

    One factory corresponds to one test run (``run_id``). Namespaces it
    hands out are unique even when two contexts are created within the
    same millisecond.

    Args:
        run_id: Identifier of the run. A random UUID when omitted.
        clock: Returns the current time in seconds since the epoch.
    """

    def __init__(
        self,
        run_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.run_id = run_id or str(uuid.uuid4())
        self._clock = clock
        self._contexts: dict[str, IsolationContext] = {}
        self._last_millis = 0

    def create_context(self, identity: TestIdentity) -> IsolationContext:
        test_id = stable_hash(identity.project, identity.file, identity.title, identity.retry)
        suite_id = stable_hash(identity.project, identity.file)

        millis = int(self._clock() * 1000)
        if millis <= self._last_millis:
            millis = self._last_millis + 1
        self._last_millis = millis

        namespace = (
            f"test_{to_base36(millis)}_{to_base36(identity.worker_index)}"
            f"_{to_base36(identity.retry)}"
        )
        context = IsolationContext(
            test_id=test_id,
            suite_id=suite_id,
            run_id=self.run_id,
            timestamp=datetime.fromtimestamp(millis / 1000, tz=timezone.utc),
            namespace=namespace,
            tags={
                "test_title": identity.title,
                "test_file": identity.file,
                "worker_index": str(identity.worker_index),
                "parallel_index": str(identity.parallel_index),
                "retry": str(identity.retry),
            },
        )
        self._contexts[test_id] = context
        logger.debug(f"Created isolation context {namespace} for {identity.title}")
        return context

    def get_context(self, test_id: str) -> IsolationContext | None:
        return self._contexts.get(test_id)

    def isolate(self, data: T, context: IsolationContext) -> IsolatedData[T]:
        """Decorate identity-like values in ``data`` with the namespace.

        Dicts are only descended into under identity-like keys; lists are
        walked element by element; strings matching known test-data
        patterns are rewritten; everything else is returned unchanged.
        The input is never modified.
        """
        return IsolatedData(
            data=self.apply_isolation(data, context),
            context=context,
            metadata={
                "isolated_at": datetime.now(timezone.utc).isoformat(),
                "isolation_version": ISOLATION_VERSION,
            },
        )

    def apply_isolation(self, data: Any, context: IsolationContext) -> Any:
        if isinstance(data, str):
            return self.isolate_string(data, context)
        if isinstance(data, list):
            return [self.apply_isolation(item, context) for item in data]
        if isinstance(data, tuple):
            return tuple(self.apply_isolation(item, context) for item in data)
        if isinstance(data, dict):
            return {
                key: self.apply_isolation(value, context)
                if isinstance(key, str) and should_isolate_field(key)
                else value
                for key, value in data.items()
            }
        return data

    @staticmethod
    def isolate_string(value: str, context: IsolationContext) -> str:
        isolated = value
        for pattern, replacement in _STRING_PATTERNS:
            isolated = pattern.sub(replacement.format(ns=context.namespace), isolated, count=1)
        return isolated

    @staticmethod
    def create_isolated_email(base_email: str, context: IsolationContext) -> str:
        """``local@domain`` -> ``<namespace>_local@domain``.

        Raises:
            ValueError: If ``base_email`` has no ``@``.
        """
        local_part, sep, domain = base_email.partition("@")
        if not sep:
            raise ValueError(f"Not an email address: {base_email!r}")
        return f"{context.namespace}_{local_part}@{domain}"

    @staticmethod
    def create_isolated_name(base_name: str, context: IsolationContext) -> str:
        return f"[{context.namespace}] {base_name}"

    @staticmethod
    def extract_namespace(value: str) -> str | None:
        """Recover the namespace embedded in a decorated value."""
        for pattern in _EXTRACT_PATTERNS:
            match = pattern.search(value)
            if match:
                return match.group(1)
        return None

    def cleanup(self, run_id: str | None = None) -> None:
        """Forget stored contexts of ``run_id``, or all of them."""
        if run_id is None:
            self._contexts.clear()
            return
        for test_id in [k for k, c in self._contexts.items() if c.run_id == run_id]:
            del self._contexts[test_id]


class IsolationDecorator:
    """Decorates builder output with one context's namespace."""

    def __init__(self, factory: IsolationContextFactory, context: IsolationContext) -> None:
        self.factory = factory
        self.context = context

    def string(self, value: str) -> str:
        return self.factory.isolate_string(value, self.context)

    def email(self, base_email: str) -> str:
        return self.factory.create_isolated_email(base_email, self.context)

    def name(self, base_name: str) -> str:
        return self.factory.create_isolated_name(base_name, self.context)

    def object(self, data: dict[str, Any]) -> dict[str, Any]:
        return self.factory.apply_isolation(data, self.context)

    def with_test_marker(self, data: dict[str, Any]) -> dict[str, Any]:
        """Copy of ``data`` with a ``__test_marker`` naming the namespace and test."""
        return {**data, "__test_marker": f"{self.context.namespace}_{self.context.test_id}"}
