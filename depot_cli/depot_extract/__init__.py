"""depot-extract: declarative extraction of depot records from bank documents."""
