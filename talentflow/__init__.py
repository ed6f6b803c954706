"""Candidate pipeline automation service."""
