"""Reconciler contract shared by every controller."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import TYPE_CHECKING

from dynauth.store.base import NamespacedName

if TYPE_CHECKING:
    from dynauth.controller.context import Context

# A request names the object to reconcile; the kind is implied by the
# controller that receives it.
Request = NamespacedName


@dataclass(frozen=True)
class Result:
    """Follow-up scheduling requested by a reconcile pass.

    ``requeue_after`` (seconds) takes precedence over ``requeue``, which
    schedules the request again with the controller's rate-limited
    backoff.
    """

    requeue: bool = False
    requeue_after: float = 0.0


class Reconciler(abc.ABC):
    """Level-triggered reconcile handler.

    Each call re-derives the desired state of *request* from the
    currently observed state.  Raising an exception asks the driver to
    retry with backoff unless the exception carries ``retryable=False``.
    """

    @abc.abstractmethod
    def reconcile(self, ctx: Context, request: Request) -> Result:
        """Drive *request* towards its desired state."""
