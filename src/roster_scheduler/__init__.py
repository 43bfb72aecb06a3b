"""
Roster Scheduling System with Fair-Rotation Assignment

Builds a week of concrete shifts from recurring templates and fills them from
an employee roster under role, availability, weekly hour and rest rules.
"""

__version__ = "1.0.0"
__author__ = "Roster Scheduler Team"
