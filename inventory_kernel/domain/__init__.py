"""Pure domain core: movement types, conversion math, unpack planning, DTOs, clock."""
