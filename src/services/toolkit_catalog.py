"""Shared constants for toolkits exposed through the integrations service.

Neutral module with no DB or service-layer imports. Used by the tool-call
classifier, the integrations client, and the connections routes.
"""

from dataclasses import dataclass

# --- Toolkit identifiers ---

# Origin reported for the integrations service's own meta-tools.
INTERNAL_TOOLKIT = "composio"

# Origin reported for identifiers that cannot be attributed to a toolkit.
UNKNOWN_TOOLKIT = "unknown"

# Toolkits that never count as "using an app" in a step summary.
NON_APP_TOOLKITS: frozenset[str] = frozenset({INTERNAL_TOOLKIT, UNKNOWN_TOOLKIT})

# --- Meta-tools ---

META_TOOL_PREFIX = "COMPOSIO_"
SEARCH_TOOLS = "COMPOSIO_SEARCH_TOOLS"
MULTI_EXECUTE_TOOL = "COMPOSIO_MULTI_EXECUTE_TOOL"
MANAGE_CONNECTIONS = "COMPOSIO_MANAGE_CONNECTIONS"
REMOTE_WORKBENCH = "COMPOSIO_REMOTE_WORKBENCH"

META_TOOL_LABELS: dict[str, str] = {
    SEARCH_TOOLS: "Search Tools",
    MULTI_EXECUTE_TOOL: "Execute Tools",
    MANAGE_CONNECTIONS: "Manage Connections",
    REMOTE_WORKBENCH: "Process Request",
}

# Ordered: the first matching keyword group wins.
SEARCH_KEYWORD_RULES: tuple[tuple[tuple[str, ...], str, str], ...] = (
    (("email", "gmail"), "gmail", "Finding email tools"),
    (("sheet", "spreadsheet"), "googlesheets", "Finding spreadsheet tools"),
    (("doc",), "googledocs", "Finding document tools"),
    (("calendar",), "googlecalendar", "Finding calendar tools"),
    (("slack",), "slack", "Finding Slack tools"),
    (("github",), "github", "Finding GitHub tools"),
)
SEARCH_FALLBACK_LABEL = "Searching for tools"

# --- Display ---

TOOLKIT_DISPLAY_NAMES: dict[str, str] = {
    "gmail": "Gmail",
    "googlesheets": "Google Sheets",
    "googledocs": "Google Docs",
    "googlecalendar": "Google Calendar",
    "googledrive": "Google Drive",
    "googleslides": "Google Slides",
    "googlemeet": "Google Meet",
    "googletasks": "Google Tasks",
    "googleforms": "Google Forms",
    "github": "GitHub",
    "slack": "Slack",
    "notion": "Notion",
    "trello": "Trello",
    "asana": "Asana",
    "linear": "Linear",
    "jira": "Jira",
    "whatsapp": "WhatsApp",
    "discord": "Discord",
    "twitter": "Twitter",
    "linkedin": "LinkedIn",
    "composio": "Composio",
}

INTERNAL_LOGO_URL = "https://avatars.githubusercontent.com/u/156948988?s=200&v=4"
LOGO_URL_TEMPLATE = "https://logos.composio.dev/api/{toolkit}"

ACTIVE_STATUS = "ACTIVE"


def toolkit_display_name(toolkit: str) -> str:
    """Return the display name for a toolkit id, capitalising unknown ids."""
    if toolkit in TOOLKIT_DISPLAY_NAMES:
        return TOOLKIT_DISPLAY_NAMES[toolkit]
    return toolkit[:1].upper() + toolkit[1:]


def toolkit_logo(toolkit: str) -> str:
    """Return the logo reference for a toolkit ('' when unattributed)."""
    if toolkit == UNKNOWN_TOOLKIT:
        return ""
    if toolkit == INTERNAL_TOOLKIT:
        return INTERNAL_LOGO_URL
    return LOGO_URL_TEMPLATE.format(toolkit=toolkit)


# --- Connectable app catalog ---


@dataclass(frozen=True)
class CatalogEntry:
    """One connectable toolkit shown on the apps page."""

    id: str
    name: str
    description: str


@dataclass(frozen=True)
class CatalogCategory:
    """A named group of catalog entries."""

    name: str
    toolkits: tuple[CatalogEntry, ...]


TOOLKIT_CATALOG: tuple[CatalogCategory, ...] = (
    CatalogCategory("Google Workspace", (
        CatalogEntry("gmail", "Gmail", "Read, send, and manage emails."),
        CatalogEntry("googlecalendar", "Google Calendar", "Manage events and meetings."),
        CatalogEntry("googledrive", "Google Drive", "Store and access files."),
        CatalogEntry("googlesheets", "Google Sheets", "Spreadsheets and data analysis."),
        CatalogEntry("googledocs", "Google Docs", "Create and edit documents."),
        CatalogEntry("googleslides", "Google Slides", "Create presentations."),
        CatalogEntry("googlemeet", "Google Meet", "Video conferencing."),
        CatalogEntry("googletasks", "Google Tasks", "Manage to-do lists."),
        CatalogEntry("googleforms", "Google Forms", "Create surveys and forms."),
    )),
    CatalogCategory("Productivity", (
        CatalogEntry("notion", "Notion", "Notes, docs, and databases."),
        CatalogEntry("slack", "Slack", "Team messaging and collaboration."),
        CatalogEntry("trello", "Trello", "Project management boards."),
        CatalogEntry("asana", "Asana", "Task and project management."),
    )),
    CatalogCategory("Developer Tools", (
        CatalogEntry("github", "GitHub", "Code repositories and issues."),
        CatalogEntry("linear", "Linear", "Issue tracking for teams."),
        CatalogEntry("jira", "Jira", "Agile project management."),
    )),
    CatalogCategory("Communication", (
        CatalogEntry("whatsapp", "WhatsApp", "Send messages and media."),
        CatalogEntry("discord", "Discord", "Community messaging."),
        CatalogEntry("twitter", "Twitter", "Social media posts."),
    )),
)

CATALOG_TOOLKIT_IDS: frozenset[str] = frozenset(
    entry.id for category in TOOLKIT_CATALOG for entry in category.toolkits
)


def normalize_toolkit_id(toolkit_id: str) -> str:
    """Normalise a free-form toolkit identifier for comparison."""
    return toolkit_id.strip().lower()
