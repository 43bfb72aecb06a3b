"""
Reporting and Export Module for Roster Scheduling System

Handles CSV, Excel and PDF export of the current week's schedule together
with coverage statistics.
"""

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any
import logging

from .data_manager import (
    DataManager, Schedule, CoverageStatus, Weekday, format_minutes,
    SUPPORTED_CSV_DELIMITERS
)
from .scheduler_logic import ShiftScheduler

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"
NAME_SEPARATOR = " | "
CSV_COLUMNS = ["Date", "End", "Role", "Required", "Assigned Names", "Status"]

STATUS_COLORS = {
    CoverageStatus.EMPTY: colors.lightcoral,
    CoverageStatus.PARTIAL: colors.orange,
    CoverageStatus.FULL: colors.lightgreen,
    CoverageStatus.OVER: colors.lightblue,
}


class ExportError(Exception):
    """Raised when an export cannot be written"""
    pass


class ReportGenerator:
    """Main class for generating reports and exports"""

    def __init__(self, data_manager: DataManager):
        self.data_manager = data_manager
        self.scheduler = ShiftScheduler(data_manager)
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        """Setup custom report styles"""
        self.styles.add(ParagraphStyle(
            name='CustomTitle',
            parent=self.styles['Heading1'],
            fontSize=18,
            spaceAfter=30,
            alignment=1  # Center alignment
        ))

        self.styles.add(ParagraphStyle(
            name='CustomHeading',
            parent=self.styles['Heading2'],
            fontSize=14,
            spaceAfter=12
        ))

    def _resolve_schedule(self, schedule: Optional[Schedule]) -> Schedule:
        if schedule is None:
            schedule = self.data_manager.get_current_schedule()
        if schedule is None:
            raise ExportError("No schedule has been generated yet")
        return schedule

    def _assigned_names(self, assignments: List[str]) -> str:
        return NAME_SEPARATOR.join(self.data_manager.get_employee_name(a) for a in assignments)

    def _create_schedule_dataframe(self, schedule: Schedule) -> pd.DataFrame:
        """One row per shift in start order"""
        data = []
        for shift in sorted(schedule.shifts, key=lambda s: s.start):
            data.append({
                'Date': shift.start.strftime(TIMESTAMP_FORMAT),
                'End': shift.end.strftime(TIMESTAMP_FORMAT),
                'Role': str(shift.role),
                'Required': shift.required_staff,
                'Assigned Names': self._assigned_names(shift.assignments),
                'Status': shift.coverage_status.label,
            })
        return pd.DataFrame(data, columns=CSV_COLUMNS)

    def export_schedule_csv(self, output_path: str, delimiter: Optional[str] = None,
                            schedule: Optional[Schedule] = None) -> bool:
        """Export schedule to CSV format"""
        schedule = self._resolve_schedule(schedule)
        if delimiter is None:
            delimiter = self.data_manager.get_setting("csvDelimiter", ",")
        if delimiter not in SUPPORTED_CSV_DELIMITERS:
            raise ExportError(f"Unsupported CSV delimiter {delimiter!r}")

        try:
            schedule_df = self._create_schedule_dataframe(schedule)
            schedule_df.to_csv(output_path, sep=delimiter, index=False)
            return True

        except (OSError, ValueError) as e:
            logger.error(f"Error exporting to CSV: {e}", exc_info=True)
            raise ExportError(f"Could not write CSV to {output_path}: {e}")

    def _create_statistics_dataframe(self, statistics: Dict[str, Any]) -> pd.DataFrame:
        data = []
        for stats in statistics["employees"].values():
            data.append({
                'Employee': stats['name'],
                'Shifts': stats['shifts'],
                'Hours': stats['hours'],
                'Max_Hours': stats['max_hours'] if stats['max_hours'] is not None else '',
            })
        return pd.DataFrame(data, columns=['Employee', 'Shifts', 'Hours', 'Max_Hours'])

    def _create_employee_dataframe(self) -> pd.DataFrame:
        data = []
        for emp in self.data_manager.get_employees():
            row = {
                'Name': emp.name,
                'Max_Hours': emp.max_hours_per_week,
                'Roles': ", ".join(emp.roles),
            }
            for day in Weekday:
                row[day.label] = ", ".join(
                    f"{format_minutes(r.start)}-{format_minutes(r.end)}" for r in emp.ranges_for(day)
                )
            data.append(row)
        return pd.DataFrame(data)

    def export_schedule_excel(self, output_path: str, schedule: Optional[Schedule] = None) -> bool:
        """Export schedule, statistics and roster to an Excel workbook"""
        schedule = self._resolve_schedule(schedule)
        statistics = self.scheduler.get_schedule_statistics(schedule)

        try:
            with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
                self._create_schedule_dataframe(schedule).to_excel(writer, sheet_name='Schedule', index=False)
                self._create_statistics_dataframe(statistics).to_excel(writer, sheet_name='Statistics', index=False)
                self._create_employee_dataframe().to_excel(writer, sheet_name='Employees', index=False)
                self._format_excel_worksheets(writer)
            return True

        except Exception as e:
            logger.error(f"Error exporting to Excel: {e}", exc_info=True)
            raise ExportError(f"Could not write Excel workbook to {output_path}: {e}")

    def _format_excel_worksheets(self, writer):
        """Widen columns to fit their content"""
        for worksheet in writer.sheets.values():
            for column in worksheet.columns:
                width = max((len(str(cell.value)) for cell in column if cell.value is not None), default=0)
                worksheet.column_dimensions[column[0].column_letter].width = min(width + 2, 50)

    def export_schedule_pdf(self, output_path: str, schedule: Optional[Schedule] = None) -> bool:
        """Export the week's shift table and coverage summary to PDF"""
        schedule = self._resolve_schedule(schedule)
        statistics = self.scheduler.get_schedule_statistics(schedule)

        try:
            doc = SimpleDocTemplate(
                output_path,
                pagesize=landscape(A4),
                rightMargin=0.5*inch,
                leftMargin=0.5*inch,
                topMargin=0.5*inch,
                bottomMargin=0.5*inch
            )

            story = [
                Paragraph(f"Shift Schedule - Week of {schedule.week_of.strftime('%B %d, %Y')}",
                          self.styles['CustomTitle']),
                self._create_shift_table(schedule),
                Spacer(1, 20),
                Paragraph("Coverage Summary", self.styles['CustomHeading']),
                self._create_summary_table(statistics),
            ]
            doc.build(story)
            return True

        except Exception as e:
            logger.error(f"Error creating PDF: {e}", exc_info=True)
            raise ExportError(f"Could not write PDF to {output_path}: {e}")

    def _create_shift_table(self, schedule: Schedule) -> Table:
        data = [['Day', 'Time', 'Role', 'Required', 'Assigned', 'Status']]
        shifts = sorted(schedule.shifts, key=lambda s: s.start)
        for shift in shifts:
            data.append([
                shift.start.strftime("%a %m/%d"),
                f"{shift.start.strftime('%H:%M')}-{shift.end.strftime('%H:%M')}",
                str(shift.role) or '---',
                str(shift.required_staff),
                Paragraph(self._assigned_names(shift.assignments) or '---', self.styles['Normal']),
                shift.coverage_status.label,
            ])

        table = Table(data, colWidths=[1.1*inch, 1.2*inch, 1.2*inch, 0.8*inch, 4.0*inch, 1.2*inch],
                      repeatRows=1)
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('GRID', (0, 0), (-1, -1), 1, colors.black),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
        ]))
        for row, shift in enumerate(shifts, 1):
            table.setStyle(TableStyle([
                ('BACKGROUND', (5, row), (5, row), STATUS_COLORS[shift.coverage_status])
            ]))
        return table

    def _create_summary_table(self, statistics: Dict[str, Any]) -> Table:
        data = [
            ['Metric', 'Value'],
            ['Total Shifts', str(statistics['total_shifts'])],
            ['Required Slots', str(statistics['required_slots'])],
            ['Filled Slots', str(statistics['filled_slots'])],
            ['Open Slots', str(statistics['open_slots'])],
        ]
        for status in CoverageStatus:
            data.append([status.label, str(statistics['coverage'][status.value])])

        table = Table(data, colWidths=[3*inch, 2*inch])
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('GRID', (0, 0), (-1, -1), 1, colors.black),
        ]))
        return table


class ExportManager:
    """Manager class for handling all export operations"""

    FORMATS = ('csv', 'excel', 'pdf')

    def __init__(self, data_manager: DataManager):
        self.data_manager = data_manager
        self.report_generator = ReportGenerator(data_manager)

    def export_schedule(self, format_type: str, output_path: str,
                        schedule: Optional[Schedule] = None, delimiter: Optional[str] = None) -> bool:
        """Export the schedule in the specified format"""
        format_type = format_type.lower()
        if format_type == 'csv':
            return self.report_generator.export_schedule_csv(output_path, delimiter, schedule)
        elif format_type == 'excel':
            return self.report_generator.export_schedule_excel(output_path, schedule)
        elif format_type == 'pdf':
            return self.report_generator.export_schedule_pdf(output_path, schedule)
        else:
            raise ValueError(f"Unsupported format: {format_type}")

    def get_default_filename(self, week_of, format_type: str) -> str:
        """Generate default filename for export"""
        extension = {'excel': 'xlsx'}.get(format_type.lower(), format_type.lower())
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"shift_schedule_week_{week_of.isoformat()}_{timestamp}.{extension}"

    def batch_export(self, output_dir: str, formats: List[str] = None) -> Dict[str, bool]:
        """Export the current schedule in multiple formats"""
        if formats is None:
            formats = list(self.FORMATS)

        schedule = self.data_manager.get_current_schedule()
        if schedule is None:
            raise ExportError("No schedule has been generated yet")

        results = {}
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        for format_type in formats:
            file_path = output_path / self.get_default_filename(schedule.week_of, format_type)
            try:
                results[format_type] = self.export_schedule(format_type, str(file_path), schedule)
            except ExportError as e:
                logger.error(f"Error exporting {format_type}: {e}")
                results[format_type] = False

        return results
