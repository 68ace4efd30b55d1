"""
Physician style learning.

Profiles are learned per subspecialty from the edits clinicians make to
generated drafts, and fed back into generation as prompt guidance.
"""
