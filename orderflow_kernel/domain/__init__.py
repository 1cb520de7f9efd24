"""Pure domain types shared by every layer: clock and result objects."""
