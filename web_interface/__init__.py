"""HTTP surface and persistence for the game editor."""
