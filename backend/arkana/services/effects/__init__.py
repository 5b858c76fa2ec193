"""Effect domain services: catalog, turn engine and display formatting.

The engine module is pure: it takes effect records and stat blocks and
returns new ones. HTTP routes and the turns service own persistence.
"""

