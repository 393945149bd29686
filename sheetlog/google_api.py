import logging
import time

import requests
from google.oauth2.credentials import Credentials as OAuthCredentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from . import config
from .errors import CsvExportError

logger = logging.getLogger(__name__)

EXPORT_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/export?format=csv&gid={sheet_id}"
EDIT_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/edit#gid={sheet_id}"


def _http_error_content(e):
    return e.content.decode('utf-8') if getattr(e, 'content', None) else str(e)


# --- OAuth and Token Helper Functions ---
def get_access_token(refresh_token=None, client_id=None, client_secret=None):
    refresh_token = refresh_token or config.REFRESH_TOKEN
    client_id = client_id or config.CLIENT_ID
    client_secret = client_secret or config.CLIENT_SECRET
    if not client_secret:
        logger.error("CRITICAL: CLIENT_SECRET not configured for token refresh.")
        raise ValueError("CLIENT_SECRET not configured.")
    if not client_id or not refresh_token:
        logger.error("CRITICAL: Client ID or refresh token not configured.")
        raise ValueError("Client ID or refresh token not configured.")
    logger.info(f"Attempting to get new access token using refresh token (starts with: {refresh_token[:10]}...).")
    payload = {
        "client_id": client_id, "client_secret": client_secret,
        "refresh_token": refresh_token, "grant_type": "refresh_token"
    }
    start_time = time.time()
    try:
        response = requests.post(config.TOKEN_URL, data=payload, timeout=config.REQUEST_TIMEOUT_SECONDS)
        response.raise_for_status()
        token_data = response.json()
        access_token = token_data.get("access_token")
        duration = time.time() - start_time
        if access_token:
            logger.info(f"Obtained new access token via refresh in {duration:.2f} seconds. Expires in: {token_data.get('expires_in')}s")
            return access_token
        logger.error(f"Token refresh response missing access_token after {duration:.2f}s. Response: {token_data}")
        raise ValueError("Access token not found in refresh response.")
    except requests.exceptions.Timeout:
        duration = time.time() - start_time; logger.error(f"Timeout ({config.REQUEST_TIMEOUT_SECONDS}s) during token refresh after {duration:.2f} seconds."); raise
    except requests.exceptions.HTTPError as e:
        duration = time.time() - start_time
        logger.error(f"HTTPError ({e.response.status_code}) during token refresh after {duration:.2f} seconds: {e.response.text}")
        if "invalid_grant" in (e.response.text or ""):
            logger.warning("Token refresh failed with 'invalid_grant'. Refresh token may be expired or revoked.")
        raise


def get_sheets_service(access_token):
    logger.info("Building Google Sheets API service object...")
    if not access_token:
        logger.error("Cannot build sheets service: access_token is missing.")
        raise ValueError("Access token is required to build sheets service.")
    creds = OAuthCredentials(token=access_token)
    service = build("sheets", "v4", credentials=creds, cache_discovery=False)
    logger.info("Google Sheets API service object built successfully.")
    return service


# --- Google Sheets API Wrapper Functions ---
def api_batch_update(service, spreadsheet_id, requests_list):
    if not requests_list:
        logger.warning("API: api_batch_update called with an empty requests_list.")
        return {}
    logger.info(f"API: Performing batchUpdate on sheet '{spreadsheet_id}' with {len(requests_list)} requests.")
    start_time = time.time()
    try:
        result = service.spreadsheets().batchUpdate(spreadsheetId=spreadsheet_id, body={"requests": requests_list}).execute()
        logger.info(f"API: Batch update successful in {time.time() - start_time:.2f}s."); return result
    except HttpError as e: logger.error(f"API: HttpError during batchUpdate after {time.time() - start_time:.2f}s: {_http_error_content(e)}", exc_info=True); raise


def api_get_values(service, spreadsheet_id, range_name, value_render_option="UNFORMATTED_VALUE", date_time_render_option="FORMATTED_STRING"):
    logger.info(f"API: Getting values from sheet '{spreadsheet_id}', range '{range_name}'.")
    start_time = time.time()
    try:
        result = service.spreadsheets().values().get(
            spreadsheetId=spreadsheet_id, range=range_name, majorDimension="ROWS",
            valueRenderOption=value_render_option, dateTimeRenderOption=date_time_render_option
        ).execute()
        logger.info(f"API: Get values successful in {time.time() - start_time:.2f}s."); return result
    except HttpError as e: logger.error(f"API: HttpError getting values after {time.time() - start_time:.2f}s: {_http_error_content(e)}", exc_info=True); raise


def api_update_values(service, spreadsheet_id, range_name, values_data, value_input_option="USER_ENTERED"):
    logger.info(f"API: Updating values '{range_name}' in sheet '{spreadsheet_id}' with option '{value_input_option}'.")
    start_time = time.time()
    try:
        result = service.spreadsheets().values().update(
            spreadsheetId=spreadsheet_id, range=range_name, valueInputOption=value_input_option, body={"values": values_data}
        ).execute()
        logger.info(f"API: Update values successful in {time.time() - start_time:.2f}s."); return result
    except HttpError as e: logger.error(f"API: HttpError updating values after {time.time() - start_time:.2f}s: {_http_error_content(e)}", exc_info=True); raise


def api_batch_clear_values(service, spreadsheet_id, ranges_list):
    # ranges_list is a list of A1 notation strings
    logger.info(f"API: Batch clearing values from sheet '{spreadsheet_id}', ranges: {ranges_list}.")
    start_time = time.time()
    try:
        result = service.spreadsheets().values().batchClear(spreadsheetId=spreadsheet_id, body={"ranges": ranges_list}).execute()
        logger.info(f"API: Batch clear values successful in {time.time() - start_time:.2f}s."); return result
    except HttpError as e: logger.error(f"API: HttpError batch clearing values after {time.time() - start_time:.2f}s: {_http_error_content(e)}", exc_info=True); raise


def api_get_spreadsheet_metadata(service, spreadsheet_id, fields="spreadsheetId,properties,sheets.properties", ranges=None, include_grid_data=False):
    logger.info(f"API: Getting metadata for spreadsheet '{spreadsheet_id}' with fields '{fields}', includeGridData: {include_grid_data}.")
    start_time = time.time()
    try:
        kwargs = {"spreadsheetId": spreadsheet_id, "fields": fields, "includeGridData": include_grid_data}
        if ranges:
            kwargs["ranges"] = ranges
        result = service.spreadsheets().get(**kwargs).execute()
        logger.info(f"API: Metadata retrieval successful in {time.time() - start_time:.2f}s."); return result
    except HttpError as e: logger.error(f"API: HttpError getting metadata after {time.time() - start_time:.2f}s: {_http_error_content(e)}", exc_info=True); raise


def fetch_csv_export(access_token, spreadsheet_id, sheet_id):
    csv_url = EXPORT_URL.format(spreadsheet_id=spreadsheet_id, sheet_id=sheet_id)
    logger.info(f"API: Fetching CSV export for sheet gid {sheet_id}.")
    start_time = time.time()
    response = requests.get(csv_url, headers={"Authorization": f"Bearer {access_token}"}, timeout=config.REQUEST_TIMEOUT_SECONDS)
    if response.status_code != 200:
        logger.error(f"API: CSV export returned {response.status_code} after {time.time() - start_time:.2f}s.")
        raise CsvExportError(response.status_code, response.text)
    logger.info(f"API: CSV export successful in {time.time() - start_time:.2f}s.")
    return response.text


# --- Request Builder Helper Functions for batchUpdate ---
def build_delete_dimension_request(range_dict): # range specifies sheetId, dimension, startIndex, endIndex
    return {"deleteDimension": {"range": range_dict}}


def build_insert_dimension_request(range_dict, inherit_from_before=True): # range specifies sheetId, dimension, startIndex, endIndex
    return {"insertDimension": {"range": range_dict, "inheritFromBefore": inherit_from_before}}


def build_append_dimension_request(sheet_id, dimension, length):
    return {"appendDimension": {"sheetId": sheet_id, "dimension": dimension, "length": length}}


def dimension_range(sheet_id, dimension, start_index, end_index):
    return {"sheetId": sheet_id, "dimension": dimension, "startIndex": start_index, "endIndex": end_index}
