"""Pure domain core: money, numbering formats, lifecycle tables, DTOs."""
