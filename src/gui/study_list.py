"""
Study List Widget

This module provides the worklist: a search form and a table of studies found
on the DICOMweb server (QIDO-RS). Double-clicking a study, or pressing Open,
opens it in the viewer.

Inputs:
    - Search fields (patient name, patient id, study date, accession number)
    - Study summaries returned by the session

Outputs:
    - study_opened signal carrying the StudySummary

Requirements:
    - PySide6 for GUI components
    - utils.async_tasks.schedule_coro for searches
"""

from PySide6.QtWidgets import (QAbstractItemView, QHBoxLayout, QHeaderView, QLabel, QLineEdit,
                               QPushButton, QTableWidget, QTableWidgetItem, QVBoxLayout, QWidget)
from PySide6.QtCore import Qt, Signal
from typing import Any, Dict, List, Optional

from core.dicom_models import StudySummary
from core.viewer_session import ViewerSession
from utils.async_tasks import schedule_coro


COLUMNS = ["Patient", "Patient ID", "Date", "Description", "Modalities", "Accession", "Series", "Images"]

SEARCH_LIMIT = 100


def build_query(patient_name: str = "", patient_id: str = "", study_date: str = "",
                accession_number: str = "", limit: int = SEARCH_LIMIT) -> Dict[str, Any]:
    """
    QIDO-RS query parameters for the worklist search fields.

    Patient names match as a prefix (trailing wildcard); study dates are
    entered as YYYYMMDD or a YYYYMMDD-YYYYMMDD range.
    """
    query: Dict[str, Any] = {"limit": limit, "fuzzymatching": "false"}
    name = patient_name.strip()
    if name:
        query["PatientName"] = name if name.endswith("*") else f"{name}*"
    if patient_id.strip():
        query["PatientID"] = patient_id.strip()
    if study_date.strip():
        query["StudyDate"] = study_date.strip().replace("/", "")
    if accession_number.strip():
        query["AccessionNumber"] = accession_number.strip()
    return query


class StudyListWidget(QWidget):
    """
    Worklist of studies with a search form.

    Features:
    - Search by patient name, patient id, date and accession number
    - Sortable table of results
    - Error message when the server cannot be reached
    """

    # Signals
    study_opened = Signal(object)  # Emitted when a study is opened (StudySummary)

    def __init__(self, session: ViewerSession, parent=None):
        """
        Initialize the study list.

        Args:
            session: Viewer session used for searches
            parent: Parent widget
        """
        super().__init__(parent)
        self.session = session
        self.studies: List[StudySummary] = []
        self._search_generation = 0
        self._create_ui()

    def _create_ui(self) -> None:
        layout = QVBoxLayout(self)
        layout.setContentsMargins(4, 4, 4, 4)

        form = QHBoxLayout()
        self.patient_name_edit = QLineEdit(self)
        self.patient_name_edit.setPlaceholderText("Patient name")
        self.patient_id_edit = QLineEdit(self)
        self.patient_id_edit.setPlaceholderText("Patient ID")
        self.study_date_edit = QLineEdit(self)
        self.study_date_edit.setPlaceholderText("Date (YYYYMMDD)")
        self.accession_edit = QLineEdit(self)
        self.accession_edit.setPlaceholderText("Accession")
        self.search_button = QPushButton("Search", self)
        self.search_button.clicked.connect(self.search)
        for edit in (self.patient_name_edit, self.patient_id_edit, self.study_date_edit, self.accession_edit):
            edit.returnPressed.connect(self.search)
            form.addWidget(edit)
        form.addWidget(self.search_button)
        layout.addLayout(form)

        self.table = QTableWidget(0, len(COLUMNS), self)
        self.table.setHorizontalHeaderLabels(COLUMNS)
        self.table.setSelectionBehavior(QAbstractItemView.SelectionBehavior.SelectRows)
        self.table.setSelectionMode(QAbstractItemView.SelectionMode.SingleSelection)
        self.table.setEditTriggers(QAbstractItemView.EditTrigger.NoEditTriggers)
        self.table.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeMode.Interactive)
        self.table.horizontalHeader().setStretchLastSection(True)
        self.table.verticalHeader().setVisible(False)
        self.table.cellDoubleClicked.connect(lambda row, _col: self._open_row(row))
        layout.addWidget(self.table, 1)

        footer = QHBoxLayout()
        self.status_label = QLabel("", self)
        self.open_button = QPushButton("Open", self)
        self.open_button.clicked.connect(self._open_selected)
        footer.addWidget(self.status_label, 1)
        footer.addWidget(self.open_button)
        layout.addLayout(footer)

    def query(self) -> Dict[str, Any]:
        return build_query(
            self.patient_name_edit.text(),
            self.patient_id_edit.text(),
            self.study_date_edit.text(),
            self.accession_edit.text(),
        )

    def search(self) -> None:
        """Run a worklist search with the current form values."""
        self._search_generation += 1
        schedule_coro(self._search(self._search_generation, self.query()), "study search")

    async def _search(self, generation: int, query: Dict[str, Any]) -> None:
        self.status_label.setText("Searching...")
        self.search_button.setEnabled(False)
        try:
            studies = await self.session.search_studies(query)
        except Exception as e:
            if generation == self._search_generation:
                print(f"Error searching studies: {e}")
                self.status_label.setText(f"Search failed: {e}")
                self.search_button.setEnabled(True)
            return
        if generation != self._search_generation:
            return
        self.search_button.setEnabled(True)
        self.set_studies(studies)

    def set_studies(self, studies: List[StudySummary]) -> None:
        """
        Fill the table.

        Args:
            studies: Study summaries to list
        """
        self.studies = list(studies)
        self.table.setSortingEnabled(False)
        self.table.setRowCount(len(self.studies))
        for row, study in enumerate(self.studies):
            values = [
                study.patient_name,
                study.patient_id,
                study.study_date,
                study.study_description,
                study.modalities,
                study.accession_number,
                str(study.number_of_series),
                str(study.number_of_instances),
            ]
            for col, value in enumerate(values):
                item = QTableWidgetItem(value)
                # Row lookup survives sorting
                item.setData(Qt.ItemDataRole.UserRole, row)
                self.table.setItem(row, col, item)
        self.table.setSortingEnabled(True)
        count = len(self.studies)
        self.status_label.setText(f"{count} stud{'y' if count == 1 else 'ies'} found")

    def _study_at(self, row: int) -> Optional[StudySummary]:
        item = self.table.item(row, 0)
        if item is None:
            return None
        index = item.data(Qt.ItemDataRole.UserRole)
        if index is None or not 0 <= index < len(self.studies):
            return None
        return self.studies[index]

    def _open_row(self, row: int) -> None:
        study = self._study_at(row)
        if study is not None:
            self.study_opened.emit(study)

    def _open_selected(self) -> None:
        rows = self.table.selectionModel().selectedRows()
        if rows:
            self._open_row(rows[0].row())
