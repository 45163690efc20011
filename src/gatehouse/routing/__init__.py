"""Request routing.

Usage:
    from gatehouse.routing import RequestClassifier, Route

    classifier = RequestClassifier(engine, MirrorTable(config.asset_mirrors))
    if classifier.classify(request) is Route.DROP:
        request.transport.close()
"""

from gatehouse.routing.classifier import RequestClassifier, Route, is_upgrade_request, raw_request_path

__all__ = [
    "RequestClassifier",
    "Route",
    "is_upgrade_request",
    "raw_request_path",
]
