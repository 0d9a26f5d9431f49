"""
Saved-list archive import pipeline: archive inspection, parsing, coordinate resolution,
persistence, and the background job state machine that ties them together.
"""
