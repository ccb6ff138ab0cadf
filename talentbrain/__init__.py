"""TalentBrain - conversational profile/role matching over an MCP loop."""

__version__ = "1.0.0"
