"""Bridges between fluxbridge and the systems that drive it.

* ``worker_bridge``: maps upstream work items onto ``FluxController``
  calls and reports progress through a ``StatusSink``.
"""
