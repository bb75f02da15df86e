"""Reconciliation driver: work queue, controllers and manager.

Public API::

    from dynauth.controller import Controller, KindSource, Manager

    controller = Controller("ca", reconciler).watch(KindSource(store, "Secret"))
    manager = Manager()
    manager.add(controller)
    manager.start()
"""

from dynauth.controller.base import Reconciler, Request, Result
from dynauth.controller.context import CancelledError, Context
from dynauth.controller.controller import ChannelSource, Controller, KindSource, Source
from dynauth.controller.manager import Manager
from dynauth.controller.queue import WorkQueue

__all__ = [
    "CancelledError",
    "ChannelSource",
    "Context",
    "Controller",
    "KindSource",
    "Manager",
    "Reconciler",
    "Request",
    "Result",
    "Source",
    "WorkQueue",
]
