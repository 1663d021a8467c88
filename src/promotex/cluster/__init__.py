"""Cluster capability interfaces and the ``oc`` implementation."""
