from cancellation_engine.stores.memory import (
    InMemoryAppointmentStore,
    InMemoryPolicyStore,
    InMemoryWaitlistStore,
)

__all__ = [
    "InMemoryAppointmentStore",
    "InMemoryPolicyStore",
    "InMemoryWaitlistStore",
]
