"""Ascendancy: multi-model chat and debate backend."""
