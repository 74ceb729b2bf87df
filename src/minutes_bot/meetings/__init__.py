"""Meeting minutes module -- processing of one ended meeting.

Provides the MeetingProcessor stage machine, the minutes generator, the
pure Markdown/HTML formatter, and chat delivery.
"""
