"""Client library integrations.

A :py:class:`ContextFactory` builds an instrumented client object for each
unit of work (a request, a job). Commands sent through that object are traced
with the tracer handed to the factory.

"""
from typing import Any


class ContextFactory:
    """An interface for building per-request client objects."""

    def report_runtime_metrics(self) -> None:
        """Publish gauges describing the state of the underlying resources."""

    def make_object_for_context(self, name: str) -> Any:
        """Return an instrumented client object.

        :param name: The name the object is known by, used to label its
            metrics.

        """
        raise NotImplementedError
