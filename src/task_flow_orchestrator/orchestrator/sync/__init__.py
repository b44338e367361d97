"""Synchronisation between the staging store and the remote tracker."""
