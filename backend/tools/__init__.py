"""Operator tooling for PrepMint deployments."""
