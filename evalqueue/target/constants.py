"""Constants shared by the console target and its driver.

The driver derives readiness from these prompts, so both sides must agree.
"""

PS1 = ">>> "  # Primary prompt
PS2 = "... "  # Continuation prompt
