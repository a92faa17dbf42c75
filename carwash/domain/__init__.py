"""Domain shapes: stored records, safe projections and input schemas."""
