"""Syllabus-aligned practice exam retrieval and test assembly engine."""
