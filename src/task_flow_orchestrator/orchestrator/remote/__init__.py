"""HTTP client for the remote task tracker."""
