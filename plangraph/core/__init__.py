"""Graph analytics engine: pure functions over immutable entity snapshots."""
