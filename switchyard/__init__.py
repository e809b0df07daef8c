"""Switchyard - multi-application workflow orchestration.

Switchyard drives end-to-end scenarios that span several web
applications at once: one session per application (a browser actor, an
optional API channel and an optional locator helper), a registry that
switches the foreground between them, and a workflow engine that runs
ordered steps, each targeting one application, with shared typed
results.

Test data created along the way is namespaced per test execution so
that parallel runs never collide, and can be torn down through
compensating transactions and a cleanup registry.

Example:
    >>> from switchyard import SessionRegistry, Workflow, WorkflowEngine, WorkflowStep
    >>>
    >>> async def create_order(ctx):
    ...     return await ctx.session.client.post("/api/orders", json={"sku": "A1"})
    >>>
    >>> async def approve_order(ctx):
    ...     order = ctx.get_result("order")
    ...     await ctx.session.actor.goto(f"/orders/{order.json()['id']}/approve")
    >>>
    >>> workflow = Workflow(
    ...     name="order_approval",
    ...     steps=[
    ...         WorkflowStep(name="create", target_application="shop",
    ...                      execute=create_order, store_as="order"),
    ...         WorkflowStep(name="approve", target_application="backoffice",
    ...                      execute=approve_order),
    ...     ],
    ... )
    >>> async with SessionRegistry(actor_factory, client_factory(config), config=config) as registry:
    ...     result = await WorkflowEngine(registry).run(workflow)
    ...     print(f"Passed: {result.success}")

Sessions:
    SessionRegistry: Owns application sessions and the current foreground
    ApplicationSession: Actor, client and locator bound to one application

Workflows:
    Workflow / WorkflowStep: Ordered steps targeting applications
    WorkflowEngine: Executes workflows with timeouts, retry and capture
    WorkflowContext: Typed result store shared between steps
    WorkflowResult: Outcome, step records, metrics

Test data:
    IsolationContextFactory: Per-test namespaces embedded in data
    TransactionLedger: Forward operations with reverse-order rollback
    CleanupRegistry: Entities to delete per namespace
    TestDataManager: Seeding, isolation and cleanup lifecycle

Configuration:
    SwitchyardConfig: Settings loaded from YAML and SWITCHYARD_* variables

Error Handling:
    SwitchyardError: Base exception for all Switchyard errors
"""

from switchyard.clients import AppClient, LoginResult, client_factory
from switchyard.config import SwitchyardConfig, get_config, load_config
from switchyard.data import (
    CleanupRegistry,
    CleanupResult,
    IsolatedData,
    IsolationContext,
    IsolationContextFactory,
    IsolationDecorator,
    TestDataHooks,
    TestDataManager,
    TestIdentity,
    TransactionLedger,
)
from switchyard.errors import (
    AuthenticationError,
    RetryConfig,
    SessionError,
    SessionNotFoundError,
    StepExecutionError,
    SwitchFailedError,
    SwitchyardError,
    WorkflowStateError,
)
from switchyard.observability import configure_logging, log_context
from switchyard.sessions import (
    ApplicationSession,
    ContextSwitchResult,
    PlaywrightActor,
    PlaywrightActorFactory,
    SessionMetrics,
    SessionRegistry,
)
from switchyard.workflow import (
    Workflow,
    WorkflowContext,
    WorkflowEngine,
    WorkflowOptions,
    WorkflowResult,
    WorkflowStatus,
    WorkflowStep,
    WorkflowValidation,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Sessions
    "ApplicationSession",
    "ContextSwitchResult",
    "PlaywrightActor",
    "PlaywrightActorFactory",
    "SessionMetrics",
    "SessionRegistry",
    # Clients
    "AppClient",
    "LoginResult",
    "client_factory",
    # Workflows
    "Workflow",
    "WorkflowContext",
    "WorkflowEngine",
    "WorkflowOptions",
    "WorkflowResult",
    "WorkflowStatus",
    "WorkflowStep",
    "WorkflowValidation",
    # Test data
    "CleanupRegistry",
    "CleanupResult",
    "IsolatedData",
    "IsolationContext",
    "IsolationContextFactory",
    "IsolationDecorator",
    "TestDataHooks",
    "TestDataManager",
    "TestIdentity",
    "TransactionLedger",
    # Configuration
    "SwitchyardConfig",
    "get_config",
    "load_config",
    "RetryConfig",
    # Logging
    "configure_logging",
    "log_context",
    # Errors
    "AuthenticationError",
    "SessionError",
    "SessionNotFoundError",
    "StepExecutionError",
    "SwitchFailedError",
    "SwitchyardError",
    "WorkflowStateError",
]
