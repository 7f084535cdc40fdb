"""
Reporting Module for Rotation Scheduling System

Tabular views of generated schedule events for reporting consumers.
"""

from typing import List, Sequence

import pandas as pd

from .scheduler_logic import ScheduleStatistics, WorkScheduleEvent

REST_MARKER = "-"


class ScheduleReport:
    """Builds pandas DataFrames from generated events"""

    def __init__(self, events: Sequence[WorkScheduleEvent]):
        self.events = list(events)

    def to_dataframe(self) -> pd.DataFrame:
        """One row per (date, team) pair"""
        data = []
        for event in self.events:
            for team in event.assigned_teams:
                data.append({
                    'Date': event.date.strftime("%Y-%m-%d"),
                    'Day': event.date.strftime("%A"),
                    'Team': team,
                    'Shift': event.shift_type or '',
                    'Is_Rest': event.is_rest_period,
                    'Hours': event.duration_minutes / 60,
                    'Cycle_Day': event.cycle_day + 1,
                    'Source': event.source.value,
                    'User_ID': event.user_id,
                    'Exception_Type': event.exception_type.value if event.exception_type else '',
                })

        columns = ['Date', 'Day', 'Team', 'Shift', 'Is_Rest', 'Hours',
                   'Cycle_Day', 'Source', 'User_ID', 'Exception_Type']
        return pd.DataFrame(data, columns=columns)

    def team_grid(self) -> pd.DataFrame:
        """Dates by teams, each cell holding the shift name or the rest marker"""
        df = self.to_dataframe()
        if df.empty:
            return pd.DataFrame()

        df['Cell'] = df['Shift'].where(~df['Is_Rest'] & (df['Shift'] != ''), REST_MARKER)
        grid = df.pivot(index='Date', columns='Team', values='Cell')
        grid.columns.name = None
        return grid.fillna(REST_MARKER)

    def hours_by_team(self) -> pd.DataFrame:
        df = self.to_dataframe()
        if df.empty:
            return pd.DataFrame(columns=['Team', 'Work_Days', 'Hours'])

        work = df[~df['Is_Rest']]
        summary = (
            work.groupby('Team')
            .agg(Work_Days=('Date', 'count'), Hours=('Hours', 'sum'))
            .reindex(sorted(df['Team'].unique()), fill_value=0)
            .rename_axis('Team')
            .reset_index()
        )
        return summary

    @staticmethod
    def statistics_dataframe(stats: ScheduleStatistics) -> pd.DataFrame:
        """Create metric/value table for a statistics summary"""
        data = [
            {'Metric': 'Days In Range', 'Value': stats.days_in_range},
            {'Metric': 'Total Events', 'Value': stats.total_events},
            {'Metric': 'Work Events', 'Value': stats.work_events},
            {'Metric': 'Rest Events', 'Value': stats.rest_events},
            {'Metric': 'Total Work Hours', 'Value': round(stats.total_work_hours, 2)},
            {'Metric': 'Average Work Hours Per Day', 'Value': round(stats.average_work_hours_per_day, 2)},
        ]
        for shift_name, count in stats.events_by_shift_type.items():
            data.append({'Metric': f'Events: {shift_name}', 'Value': count})
        for team, count in stats.events_by_team.items():
            data.append({'Metric': f'Team {team} Events', 'Value': count})

        return pd.DataFrame(data)

    def override_rows(self) -> List[dict]:
        """Rows whose day was replaced by a turn exception"""
        return [event.to_dict() for event in self.events if event.is_override]
