"""Pluggable components for ensdns (resolution strategies)."""
