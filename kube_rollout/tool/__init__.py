"""Command line tool for kube-rollout."""
