"""Template-based atlas label fusion with hybrid majority voting / joint label fusion."""
