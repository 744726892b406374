"""Deal workflow: stage taxonomy, transition rules, mutators and release gate."""
