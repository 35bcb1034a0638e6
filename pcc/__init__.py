"""Proxy Config Coordinator (PCC).

Keeps an editable multi-service reverse-proxy configuration in sync with:
 - durable storage (debounced autosave, orphan upstreams preserved)
 - a running proxy engine (debounced, coalesced hot reloads)

The engine, the storage medium and the UI are collaborators; this package
owns the normalized model, its two serialization directions and the
save/reload scheduling around them.
"""
