"""State layer.

The observed store tree, the change-event type it publishes, and the
structural diff used to replay external edits as per-field events.
"""
