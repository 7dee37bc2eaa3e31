from __future__ import annotations


def get_commentable_lines(patch_text: str) -> set[int]:
    """
    Return the new-file line numbers GitHub accepts review comments on.

    These are the lines shown on the right side of the diff: added lines and
    unchanged context lines inside a hunk. Removed lines have no new-file line
    number and do not advance the counter.
    """
    lines: set[int] = set()
    file_line: int | None = None

    for line in patch_text.splitlines():
        if line.startswith("@@"):
            try:
                new_file_range = line.split("+")[1].split(" ")[0]
                file_line = int(new_file_range.split(",")[0])
            except (IndexError, ValueError):
                file_line = None
            continue

        if file_line is None:
            continue
        if line.startswith("-"):
            continue  # Removed line
        if line.startswith("\\"):
            continue  # "\ No newline at end of file"

        lines.add(file_line)
        file_line += 1

    return lines
