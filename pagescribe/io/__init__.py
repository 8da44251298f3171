"""Filesystem input and output: image discovery and markdown writing."""
