"""Dossier migration pipeline."""
