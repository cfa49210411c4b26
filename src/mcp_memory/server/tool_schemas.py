"""MCP Memory Tool Schemas -- the two agent-facing tools: remember and search."""

TOOL_SCHEMAS = [
    {
        "name": "addToMCPMemory",
        "description": (
            "This tool stores important user information in a persistent memory layer. Use it when: "
            "1. User explicitly asks to remember something (\"remember this...\") "
            "2. You detect significant user preferences, traits, or patterns worth preserving "
            "3. Technical details, examples, or emotional responses emerge that would be valuable in future "
            "interactions. Consider using this tool after each user message to build comprehensive context over "
            "time. The stored information will be available in future sessions to provide personalized responses. "
            "THIS TOOL MUST BE INVOKED THROUGH A FUNCTION CALL - IT IS NOT A PASSIVE RESOURCE BUT AN ACTIVE "
            "STORAGE MECHANISM THAT REQUIRES EXPLICIT INVOCATION."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "thingToRemember": {"type": "string", "description": "The statement to store"},
            },
            "required": ["thingToRemember"],
        },
    },
    {
        "name": "searchMCPMemory",
        "description": (
            "This tool searches the user's persistent memory layer for relevant information, preferences, and "
            "past context. It uses semantic matching to find connections between your query and stored memories, "
            "even when exact keywords don't match. Use this tool when: "
            "1. You need historical context about the user's preferences or past interactions "
            "2. The user refers to something they previously mentioned or asked you to remember "
            "3. You need to verify if specific information about the user exists in memory. "
            "This tool must be explicitly invoked through a function call - it is not a passive resource but an "
            "active search mechanism. Always consider searching memory when uncertain about user context or "
            "preferences."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "informationToGet": {"type": "string", "description": "What to look for, in natural language"},
            },
            "required": ["informationToGet"],
        },
    },
]
