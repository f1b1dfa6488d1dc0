"""
Map engine seam and event orchestration.

`types.MapEngine` is the slice of the browser map this backend talks to;
`in_memory.InMemoryMapEngine` mirrors it server-side. `session.ExplorerSession`
runs the per-event pipeline against any engine.
"""
